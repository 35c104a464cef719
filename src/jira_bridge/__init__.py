"""
jira-bridge: Jira issues inside Slack

Look up, transition, reassign and comment on Jira issues from Slack, and
view project and team statistics.
"""

try:
    from importlib.metadata import version
    __version__ = version("jira-bridge")
except Exception:
    __version__ = "0.0.0"  # Fallback for development

__all__ = ["__version__"]
