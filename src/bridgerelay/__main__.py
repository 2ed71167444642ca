"""Run the relayer: python -m bridgerelay"""

from dotenv import load_dotenv

load_dotenv()

from bridgerelay.main import main  # noqa: E402

main()
