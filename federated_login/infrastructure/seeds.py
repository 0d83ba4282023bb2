"""
Standard OAuth provider rows.

Seeded inactive; an operator activates a provider once its client
credentials are present in the environment variables named here.
"""

DEFAULT_PROVIDERS = [
    {
        "name": "Google",
        "slug": "google",
        "client_id": "GOOGLE_CLIENT_ID",
        "secret_env_key": "GOOGLE_CLIENT_SECRET",
        "scope": ["openid", "profile", "email"],
        "auth_url": "https://accounts.google.com/o/oauth2/v2/auth",
        "token_url": "https://oauth2.googleapis.com/token",
        "user_info_url": "https://openidconnect.googleapis.com/v1/userinfo",
        "redirect_uri": "http://localhost:8080/oauth/google/callback",
        "active": False,
        "response_params": {},
    },
    {
        "name": "GitHub",
        "slug": "github",
        "client_id": "GITHUB_CLIENT_ID",
        "secret_env_key": "GITHUB_CLIENT_SECRET",
        "scope": ["read:user", "user:email"],
        "auth_url": "https://github.com/login/oauth/authorize",
        "token_url": "https://github.com/login/oauth/access_token",
        "user_info_url": "https://api.github.com/user",
        "redirect_uri": "http://localhost:8080/oauth/github/callback",
        "active": False,
        "response_params": {"accept": "json"},
    },
    {
        "name": "Facebook",
        "slug": "facebook",
        "client_id": "FACEBOOK_CLIENT_ID",
        "secret_env_key": "FACEBOOK_CLIENT_SECRET",
        "scope": ["public_profile", "email"],
        "auth_url": "https://www.facebook.com/v12.0/dialog/oauth",
        "token_url": "https://graph.facebook.com/v12.0/oauth/access_token",
        "user_info_url": "https://graph.facebook.com/me?fields=id,name,email",
        "redirect_uri": "http://localhost:8080/oauth/facebook/callback",
        "active": False,
        "response_params": {},
    },
    {
        "name": "Microsoft",
        "slug": "microsoft",
        "client_id": "MICROSOFT_CLIENT_ID",
        "secret_env_key": "MICROSOFT_CLIENT_SECRET",
        "scope": ["openid", "profile", "email"],
        "auth_url": "https://login.microsoftonline.com/common/oauth2/v2.0/authorize",
        "token_url": "https://login.microsoftonline.com/common/oauth2/v2.0/token",
        "user_info_url": "https://graph.microsoft.com/oidc/userinfo",
        "redirect_uri": "http://localhost:8080/oauth/microsoft/callback",
        "active": False,
        "response_params": {},
    },
    {
        "name": "Twitter",
        "slug": "twitter",
        "client_id": "TWITTER_CLIENT_ID",
        "secret_env_key": "TWITTER_CLIENT_SECRET",
        "scope": ["tweet.read", "users.read", "offline.access"],
        "auth_url": "https://twitter.com/i/oauth2/authorize",
        "token_url": "https://api.twitter.com/2/oauth2/token",
        "user_info_url": "https://api.twitter.com/2/users/me",
        "redirect_uri": "http://localhost:8080/oauth/twitter/callback",
        "active": False,
        "response_params": {},
    },
    {
        "name": "LinkedIn",
        "slug": "linkedin",
        "client_id": "LINKEDIN_CLIENT_ID",
        "secret_env_key": "LINKEDIN_CLIENT_SECRET",
        "scope": ["r_liteprofile", "r_emailaddress"],
        "auth_url": "https://www.linkedin.com/oauth/v2/authorization",
        "token_url": "https://www.linkedin.com/oauth/v2/accessToken",
        "user_info_url": "https://api.linkedin.com/v2/me",
        "redirect_uri": "http://localhost:8080/oauth/linkedin/callback",
        "active": False,
        "response_params": {},
    },
]
