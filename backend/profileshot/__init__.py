"""ProfileShot: LinkedIn profile screenshots from a managed browser session."""

__version__ = "0.1.0"
