from .env import env_bool, env_int, env_list

__all__ = ["env_bool", "env_int", "env_list"]
