"""Browser automation over the WebDriver protocol.

Provides session management (``session``) and user-agent rotation
(``user_agents``).
"""
