"""Firebase app initialization shared by all functions."""

import firebase_admin

app = firebase_admin.initialize_app()
