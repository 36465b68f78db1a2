from app.superadmin import create_app

app = create_app()
