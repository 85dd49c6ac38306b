from touchup_api.main import run

run()
