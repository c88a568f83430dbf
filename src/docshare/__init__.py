"""docshare: secure share links and access control for PDF documents."""

__version__ = '0.1.0'
