def with_session(application, session):
    """Inject a session into the scope the way SessionMiddlewareStack would."""
    async def app(scope, receive, send):
        return await application(dict(scope, session=session), receive, send)
    return app
