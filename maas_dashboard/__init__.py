"""
MaaS gateway dashboard.

Backend (FastAPI) and operator UI (Streamlit) for a Kuadrant-protected
model-serving gateway:
- traffic counts from Prometheus, with a fallback to gateway access logs
- live request feed and policy enforcement statistics
- Kuadrant policy browser
- chat-completion simulator for exercising the gateway's policies
"""

__version__ = "0.1.0"
