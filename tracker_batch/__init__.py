"""tracker-batch: resumable batch issue mutations for Yandex Tracker."""

__version__ = "0.2.0"
