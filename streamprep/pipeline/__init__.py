"""
The processing pipeline: `orchestrator` sequences the stages for one video,
`job_queue` schedules, retries and tracks those runs across a worker pool.
"""
