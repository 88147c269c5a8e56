"""
Smart Thumbnail Editor - AI editing for YouTube gaming thumbnails.

Modules:
  config        - Environment settings (.env)
  errors        - Exception hierarchy and Gemini error translation
  images        - Encoded image handles and the Pillow pixel codec
  models        - Detected elements, selections, snapshots
  chroma_key    - Green screen to transparency
  instruction   - Ordered edit instruction builder
  generator     - Gemini analyze / edit / extract / enhance
  orchestrator  - Edit pipeline with best-effort layer extraction
  session       - Editing state machine and session owner
  session_store - JSON session persistence
  workspace     - Asset export
  mcp_server    - MCP tools over one session
  cli           - One-shot command line editor
"""
