from prometheus_client import Counter, Histogram

jobs_created = Counter(
    "stitch_jobs_created_total",
    "Total stitch jobs accepted for processing",
)

jobs_succeeded = Counter(
    "stitch_jobs_succeeded_total",
    "Total stitch jobs that produced a downloadable artifact",
)

jobs_failed = Counter(
    "stitch_jobs_failed_total",
    "Total stitch jobs that failed processing",
)

jobs_evicted = Counter(
    "stitch_jobs_evicted_total",
    "Total finished jobs removed after the retention window",
)

jobs_processing_seconds = Histogram(
    "stitch_job_processing_seconds",
    "Time spent fetching and stitching a job in seconds",
)
