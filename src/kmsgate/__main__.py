"""Entry point for running the gateway as module: python -m kmsgate"""

# Load .env before boto3 and the backend factory read os.environ
from dotenv import load_dotenv
load_dotenv()

from kmsgate.main import main

if __name__ == "__main__":
    main()
