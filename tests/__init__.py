"""
Scheduling Assistant Tests

Running Tests:
    # Unit tests (no Redis or Google Calendar needed)
    pytest tests/unit -v

    # Smoke tests against a running instance
    pytest tests/e2e/smoke_test_e2e.py -v

Test Coverage:
    - Date/time parsing and zone arithmetic
    - Availability search and slot validation
    - Google Calendar client (mocked HTTP)
    - Conversation state storage
    - Booking conversation and availability queries
    - HTTP routes
"""
