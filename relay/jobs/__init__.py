"""
Background jobs: durable queue, worker pool and cron scheduler.
"""
