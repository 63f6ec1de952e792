from therasched.metrics.logger import utc_now_iso, write_metrics, write_report
from therasched.metrics.metrics import collect_schedule_metrics

__all__ = ["collect_schedule_metrics", "utc_now_iso", "write_metrics", "write_report"]
