"""Document API: upload, download and e-mail PDF/DOCX documents."""

__version__ = "0.1.0"
