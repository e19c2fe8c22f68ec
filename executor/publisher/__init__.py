from executor.publisher.result_publisher import PendingRecord, ResultPublisher

__all__ = ["PendingRecord", "ResultPublisher"]
