"""Player accounts: credentials, registration and phone handles."""
