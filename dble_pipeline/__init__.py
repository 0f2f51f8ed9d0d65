"""dble pipeline service: workflow engine, approval gates and timeline API."""
