"""Artifact producer seam.

The extraction and rendering pipeline that writes the artifact to the
result bucket runs outside this service. The gateway only needs something
that accepts an ExtractionJob; deployments plug in a queue client here.
"""

from __future__ import annotations

import logging
from typing import Protocol

from civilytix.db import models as db_models

logger = logging.getLogger(__name__)


class ArtifactProducerProtocol(Protocol):
    """Materializes the artifact of an accepted request at its result URL."""

    def produce(self, job: db_models.ExtractionJob) -> None: ...


class LoggingArtifactProducer(ArtifactProducerProtocol):
    """Producer that only records the hand-off.

    Used when no pipeline is attached, e.g. in local development.
    """

    def produce(self, job: db_models.ExtractionJob) -> None:
        logger.info(
            "extraction job %s for user %s queued for %s",
            job.request_id,
            job.user_id,
            job.result_url,
        )


def get_producer() -> ArtifactProducerProtocol:
    """Return the producer used by the HTTP layer."""
    return LoggingArtifactProducer()
