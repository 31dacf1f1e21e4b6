from indexer.server import main

main()
