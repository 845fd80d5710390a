from metastudio.api.main import create_app

app = create_app()

if __name__ == "__main__":
    import os
    import uvicorn
    host = os.getenv("METASTUDIO_HOST", "0.0.0.0")
    port = int(os.getenv("METASTUDIO_PORT", "8001"))
    uvicorn.run(app, host=host, port=port)
