from coreextract.models.base import Base
from coreextract.models.job import Job
from coreextract.models.job_file import JobFile

__all__ = ["Base", "Job", "JobFile"]
