"""Mirror SharePoint and OneDrive sharing permissions into a security-posture platform."""

__version__ = "0.1.0"
