from docsettle import create_app

app = create_app()
