from lpgledger import create_app

app = create_app()
