async def connect(engine):
    """Open a session that records everything sent to it."""
    inbox = []
    session_id = engine.open_session(inbox.append)
    await engine.join()
    return session_id, inbox
