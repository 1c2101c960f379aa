"""
Batch query scheduler.
"""
from server_scout.services.scanner.scanner_service import ScannerService, ScanStats, server_record

__all__ = ["ScannerService", "ScanStats", "server_record"]
