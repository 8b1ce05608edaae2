from auth.credentials import Credentials, OAuth
from auth.flows import AuthorizationCodePkceFlow
from spotkit.client import Spotify
from spotkit.config import Config
from spotkit.env import load_env, setup_logging


def main() -> None:
    load_env()
    setup_logging()

    flow = AuthorizationCodePkceFlow(
        Credentials.from_env(),
        OAuth.from_env(scopes="playlist-read-private user-read-private"),
    )
    config = Config.from_env(token_cached=True)

    with Spotify(flow, config=config) as client:
        client.prompt_for_token()
        user = client.me()
        print(f"Playlists for {user.get('display_name') or user['id']}:")
        for playlist in client.current_user_playlists():
            print(f"- {playlist['name']} ({playlist['tracks']['total']} tracks)")


if __name__ == "__main__":
    main()
