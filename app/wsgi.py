from app.roadstatus import create_app

app = create_app()
