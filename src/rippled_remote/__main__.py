import uvicorn

from rippled_remote.config import load_config


def main():
    service = load_config().service
    uvicorn.run("rippled_remote.app:app", host=service.host, port=service.port, lifespan="on")


if __name__ == "__main__":
    main()
