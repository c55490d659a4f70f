from app.edulink import create_app

app = create_app()
