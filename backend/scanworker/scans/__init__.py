from scanworker.scans.routes import scans_bp

__all__ = ["scans_bp"]
