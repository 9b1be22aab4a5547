"""
Adapter layer for the Document API.

Contains the file storage adapter (local filesystem with atomic writes) and
the SMTP e-mail adapter used to send documents as attachments.
"""
