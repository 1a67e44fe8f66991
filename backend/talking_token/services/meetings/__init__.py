"""Meeting services: wiring session engines to storage and sockets.

Routes and socket handlers look engines up here by meeting code instead of
building them, so each meeting has exactly one live engine per app.
"""
