from arcboard.main import app

app(prog_name="arcboard")
