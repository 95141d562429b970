"""
Test Package Initialization

This package contains all unit and integration tests for the
medical interpreter session core.

Test Structure:
- test_config.py: Configuration tests
- test_detectors.py: Text detector and wake phrase tests
- test_conversation.py: Conversation store, tool registry and event tests
- test_protocol.py: Protocol handler tests
- test_transport.py: WebRTC transport and metering tests
- test_realtime_api.py: Credential and negotiation client tests
- test_session_controller.py: Session lifecycle tests
- test_medical_tools.py: Medical tool handler and webhook tests
- test_db.py: Conversation repository tests
- test_api_server.py: FastAPI endpoint tests

Run tests with:
    pytest tests/ -v
    pytest tests/ -v --cov=medinterp
"""
