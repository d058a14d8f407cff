"""
HTTP gateway that owns analysis sessions and wires the recognizer backends.
"""
