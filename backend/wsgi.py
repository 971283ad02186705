from partsflow import create_app

app = create_app()
