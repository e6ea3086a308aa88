from app.csrdash import create_app

app = create_app()
