"""static-edge: resumable provisioning of secure static-site hosting on AWS."""

__version__ = "0.1.0"
