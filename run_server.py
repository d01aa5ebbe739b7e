import uvicorn

if __name__ == "__main__":
    print("Starting Telemetry Ingestion Server...")
    print("Docs available at: http://localhost:8000/docs")

    uvicorn.run(
        "simtelemetry.api.server:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
