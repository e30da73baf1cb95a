"""NuGet adapter: serves nuget.org packages through the registry protocol."""
