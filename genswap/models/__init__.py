"""Data models for revisions, generations, issue reports and update sessions."""
