import os
import sys

import requests


def ingest_url(base_url: str, sender: str, receiver: str, endpoint: str) -> str:
    return f"{base_url.rstrip('/')}/api/{sender}/{receiver}/{endpoint}"


def send_file(base_url: str, sender: str, receiver: str, endpoint: str, file_path: str,
              content_type: str = "application/octet-stream", timeout: float = 30) -> requests.Response:
    """Upload a file as a multipart form part"""
    url = ingest_url(base_url, sender, receiver, endpoint)
    with open(file_path, 'rb') as f:
        files = {"file": (os.path.basename(file_path), f, content_type)}
        return requests.post(url, files=files, timeout=timeout)


def send_body(base_url: str, sender: str, receiver: str, endpoint: str, data: bytes,
              content_type: str = "application/octet-stream", timeout: float = 30) -> requests.Response:
    """Post raw bytes as the request body"""
    url = ingest_url(base_url, sender, receiver, endpoint)
    headers = {"Content-Type": content_type}
    return requests.post(url, data=data, headers=headers, timeout=timeout)


if __name__ == "__main__":
    base_url = os.environ.get("INGEST_URL", "http://localhost:8000")

    # Send request
    try:
        if len(sys.argv) > 1:
            response = send_file(base_url, "acme", "corp", "orders", sys.argv[1])
        else:
            response = send_body(base_url, "acme", "corp", "orders",
                                 b"<order><item>Item 1</item></order>", "application/xml")
        if response.status_code == 200:
            print("Response Headers:")
            print(response.headers)
            print("\nResponse Body:")
            print(response.text)
        else:
            print(f"Error: Received status code {response.status_code}")
            print("Response Body:")
            print(response.text)
    except requests.exceptions.RequestException as e:
        print(f"An error occurred: {e}")
