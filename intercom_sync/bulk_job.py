"""
Handle for an asynchronous Intercom bulk job.
"""

import logging
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)

COMPLETE_STATES = ('completed', 'completed_with_errors', 'failed', 'closed')


class IntercomBulkJob:
    """
    A bulk job submitted to Intercom.

    Intercom processes bulk jobs in the background; this object only holds the
    job id and the client needed to poll its status.
    """

    def __init__(self, client, job_id: str):
        self.client = client
        self.id = job_id
        self._info: Optional[Dict[str, Any]] = None

    def get_info(self, refresh: bool = False) -> Dict[str, Any]:
        """Return the job record, fetching it on first use or when refresh is set."""
        if self._info is None or refresh:
            self._info = self.client.jobs.get(self.id)
            logger.debug(f"Bulk job {self.id} state: {self._info.get('state')}")
        return self._info

    def refresh(self) -> Dict[str, Any]:
        return self.get_info(refresh=True)

    @property
    def state(self) -> Optional[str]:
        return self.get_info().get('state')

    def is_complete(self) -> bool:
        """True once Intercom has finished processing every item of the job."""
        return self.refresh().get('state') in COMPLETE_STATES

    def get_errors(self) -> Dict[str, Any]:
        """Fetch the per-item errors Intercom recorded for this job."""
        return self.client.jobs.errors(self.id)

    def __repr__(self):
        return f"IntercomBulkJob(id={self.id!r})"
