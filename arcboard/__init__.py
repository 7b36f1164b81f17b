"""arcboard: Azure Arc onboarding and Intune packaging for Windows devices."""

__version__ = "1.0.0"
