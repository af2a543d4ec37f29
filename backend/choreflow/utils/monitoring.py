"""Monitoring, logging, and error tracking utilities"""
import inspect
import json
import logging
import traceback
from collections import Counter
from datetime import datetime, timezone
from functools import wraps
from typing import Dict, Any, Optional

# Configure structured logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(),
    ]
)

logger = logging.getLogger("choreflow")


class StructuredLogger:
    """Structured JSON logging"""

    @staticmethod
    def log_event(
        event_type: str,
        message: str,
        user_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        level: str = "INFO"
    ):
        """Log structured event"""
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": event_type,
            "message": message,
            "level": level,
        }

        if user_id:
            log_data["user_id"] = user_id

        if metadata:
            log_data["metadata"] = metadata

        log_message = json.dumps(log_data, default=str)

        if level == "ERROR":
            logger.error(log_message)
        elif level == "WARNING":
            logger.warning(log_message)
        elif level == "DEBUG":
            logger.debug(log_message)
        else:
            logger.info(log_message)

    @staticmethod
    def log_error(
        error: Exception,
        context: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None
    ):
        """Log error with full context"""
        StructuredLogger.log_event(
            event_type="error",
            message=str(error),
            user_id=user_id,
            metadata={
                "error_type": type(error).__name__,
                "traceback": traceback.format_exc(),
                "context": context or {},
            },
            level="ERROR"
        )


class DispatchMetrics:
    """Track notification admission and delivery counters"""

    def __init__(self):
        self.metrics: Dict[str, Any] = {
            "admitted": 0,
            "delivered": 0,
            "failed_attempts": 0,
            "evicted": 0,
            "skipped_no_token": 0,
            "last_drain": None,
        }
        self.rejections: Counter = Counter()

    def record_admission(self):
        self.metrics["admitted"] += 1

    def record_rejection(self, reason: str):
        self.rejections[reason] += 1

    def record_delivery(self, success: bool):
        if success:
            self.metrics["delivered"] += 1
        else:
            self.metrics["failed_attempts"] += 1

    def record_eviction(self):
        self.metrics["evicted"] += 1

    def record_skip(self):
        self.metrics["skipped_no_token"] += 1

    def record_drain(self, at: datetime):
        self.metrics["last_drain"] = at.isoformat()

    def get_delivery_rate(self) -> float:
        """Percentage of delivery attempts that succeeded"""
        total = self.metrics["delivered"] + self.metrics["failed_attempts"]
        if total == 0:
            return 0.0
        return (self.metrics["delivered"] / total) * 100

    def get_metrics(self) -> Dict[str, Any]:
        """Get all metrics"""
        return {
            **self.metrics,
            "rejected": dict(self.rejections),
            "delivery_rate": self.get_delivery_rate(),
        }


def error_handler(func):
    """Decorator for error handling - handles both sync and async functions"""
    if inspect.iscoroutinefunction(func):
        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                StructuredLogger.log_error(e, context={"function": func.__name__})
                raise
        return async_wrapper

    @wraps(func)
    def sync_wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except Exception as e:
            StructuredLogger.log_error(e, context={"function": func.__name__})
            raise
    return sync_wrapper
