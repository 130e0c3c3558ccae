"""Wire protocol and configuration shared by server and client."""
