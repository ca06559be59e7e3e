from abc import ABC, abstractmethod
from typing import List, Optional

from flowrelay.core.models.job_types import JobTypeConfig


class JobTypesPort(ABC):
    @abstractmethod
    def load_job_types(self) -> None:
        """Load or reload job type configurations from the source"""
        pass

    @abstractmethod
    def get_job_types(self) -> List[JobTypeConfig]:
        pass

    @abstractmethod
    def get_job_type(self, name: str) -> Optional[JobTypeConfig]:
        pass

    @abstractmethod
    def find_by_route(self, route: str) -> Optional[JobTypeConfig]:
        """Return the job type whose inbound routes contain `route`."""
        pass
